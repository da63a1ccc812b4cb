import sys

from buddy_bot.app import main


if __name__ == "__main__":
    try:
        main()
    except ValueError as exc:
        print(f"Config error: {exc}", file=sys.stderr)
        print("Fill DISCORD_TOKEN and LLM_API_KEY (plus optional LLM_* settings) in .env.", file=sys.stderr)
        raise SystemExit(2)
