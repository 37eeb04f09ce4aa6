import argparse
import asyncio
import logging

from buddy import ButtonBuddy
from buddy.config import Settings


def main():
    parser = argparse.ArgumentParser(description="在网页上一步步高亮完成目标所需点击的元素")
    parser.add_argument("goal", help="目标，例如 \"cancel my subscription\"")
    parser.add_argument("url", help="起始网址")
    parser.add_argument("--max-steps", type=int, default=10)
    parser.add_argument("--headless", action="store_true")
    args = parser.parse_args()

    settings = Settings()
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

    buddy = ButtonBuddy.from_settings(settings)
    asyncio.run(buddy.run(args.goal, args.url, max_steps=args.max_steps, headless=args.headless))


if __name__ == "__main__":
    main()
