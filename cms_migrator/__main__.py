"""Allow ``python -m cms_migrator``."""

from cms_migrator.cli import main

if __name__ == "__main__":
    main()
