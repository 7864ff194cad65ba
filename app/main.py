import sys
import pathlib

# Ensure root is on sys.path so `municipal_scanner` is importable when run as a script
project_root = pathlib.Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from municipal_scanner.cli import main


if __name__ == "__main__":
    main()
