import argparse
import sys
from datetime import datetime, timezone

import requests

from lib.config import get_settings

def trigger_daily_prompts(base_url: str, key: str, time: str = None, timeout: float = 30.0) -> dict:
    """Call the daily prompts endpoint once and return its JSON reply"""
    params = {'key': key}
    if time:
        params['time'] = time
    response = requests.get(f"{base_url.rstrip('/')}/api/cron/daily-prompts", params=params, timeout=timeout)
    response.raise_for_status()
    return response.json()

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Send the daily journaling prompts that are due now")
    parser.add_argument('--url', default='http://localhost:8000', help="Base URL of the running app")
    parser.add_argument('--key', default=None, help="Cron API key (defaults to CRON_API_KEY)")
    parser.add_argument('--time', default=None, help="HH:MM to match; omit to match each user's local time")
    parser.add_argument('--utc-now', action='store_true', help="Send the current UTC time as HH:MM")
    args = parser.parse_args(argv)

    key = args.key or get_settings().cron_api_key
    if not key:
        print("No cron key given and CRON_API_KEY is not set")
        return 2

    time = args.time
    if args.utc_now and not time:
        time = datetime.now(timezone.utc).strftime('%H:%M')

    try:
        result = trigger_daily_prompts(args.url, key, time)
    except requests.RequestException as e:
        print(f"Error triggering daily prompts: {str(e)}")
        return 1

    print(f"{result.get('message')}: {result.get('sentCount', 0)}/{result.get('count', 0)} sent, "
          f"{result.get('errors', 0)} errors")
    return 0

if __name__ == "__main__":
    sys.exit(main())
