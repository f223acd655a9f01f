import sys

from tracker.main import run

if __name__ == "__main__":
    sys.exit(run())
