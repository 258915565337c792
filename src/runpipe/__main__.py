"""runpipe entry point.

Supports: python -m runpipe
"""

from .cli import main

if __name__ == "__main__":
    main()
