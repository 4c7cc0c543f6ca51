"""dx-exec entry point.

Supports: python -m dx_exec
"""

from .app import main

if __name__ == "__main__":
    main()
