"""
Entry point for TermChat when run from a source checkout (``python .``).
"""

from TermChat.__main__ import main

if __name__ == '__main__':
    main()
