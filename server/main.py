from __future__ import annotations

from auroraguard.cli import main

if __name__ == "__main__":
    main()
