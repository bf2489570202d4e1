"""Run a notification service process: ``python main.py dispatcher|scheduler``."""

from notifier.main import main

if __name__ == "__main__":
    raise SystemExit(main())
