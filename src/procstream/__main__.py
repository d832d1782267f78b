"""procstream 入口点。

支持: python -m procstream
"""

from .app import main

if __name__ == "__main__":
    main()
