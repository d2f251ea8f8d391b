import logging
import random
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = 'reflection'

PROMPT_TEMPLATES: Dict[str, List[str]] = {
    'gratitude': [
        "What are three things you're grateful for today?",
        "Who is someone that made a positive impact on your life recently?",
        "What small joy did you experience today that you might normally overlook?",
        "What aspect of your health are you most grateful for right now?",
        "What's something beautiful you noticed in your environment today?",
    ],
    'reflection': [
        "What was the most meaningful part of your day?",
        "What's one thing you learned today?",
        "How did you take care of yourself today?",
        "What would you do differently if you could repeat today?",
        "What's something you accomplished today that you're proud of?",
    ],
    'learning': [
        "What new skill would you like to develop in the next month?",
        "What's something you learned recently that surprised you?",
        "What book, article, or conversation taught you something valuable lately?",
        "What mistake did you make recently, and what did you learn from it?",
        "What's one area of your life where you'd like to gain more knowledge?",
    ],
    'emotions': [
        "How would you describe your emotional state today?",
        "What triggered strong emotions for you today, and how did you respond?",
        "What's one emotion you experienced today that you'd like to understand better?",
        "How did you manage a difficult emotion today?",
        "What brought you joy or peace today?",
    ],
    'future': [
        "What's one thing you're looking forward to in the coming week?",
        "What's a small step you could take tomorrow toward an important goal?",
        "How do you want to feel at the end of this month?",
        "What's one habit you'd like to build in the near future?",
        "Visualize your ideal day one year from now. What does it look like?",
    ],
}

CATEGORY_DESCRIPTIONS: Dict[str, str] = {
    'gratitude': "Prompts to reflect on things you're thankful for",
    'reflection': "Prompts to reflect on your day and experiences",
    'learning': "Prompts focused on growth and knowledge acquisition",
    'emotions': "Prompts to explore your emotional landscape",
    'future': "Prompts for goal-setting and future planning",
}

class PromptCatalog:
    def __init__(self, rng: Optional[random.Random] = None, templates: Optional[Dict[str, List[str]]] = None):
        self.rng = rng or random.Random()
        self.templates = templates or PROMPT_TEMPLATES

    def categories(self) -> Dict[str, str]:
        """Known categories with a short description of each."""
        return {name: CATEGORY_DESCRIPTIONS.get(name, '') for name in self.templates}

    def resolve_categories(self, categories: Optional[Iterable[str]]) -> List[str]:
        requested = list(categories or [])
        # Keep request order, drop unknown tags and duplicates
        valid = [c for i, c in enumerate(requested) if c in self.templates and c not in requested[:i]]
        if not valid:
            logger.warning(f"No valid prompt categories in {requested}, defaulting to {DEFAULT_CATEGORY}")
            valid = [DEFAULT_CATEGORY]
        return valid

    def generate_prompt(self, categories: Optional[Iterable[str]] = None) -> str:
        """Pick a category uniformly, then a prompt uniformly from that category."""
        category = self.rng.choice(self.resolve_categories(categories))
        return self.rng.choice(self.templates[category])
