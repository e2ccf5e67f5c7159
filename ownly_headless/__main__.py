"""Allow ``python -m ownly_headless``."""

from ownly_headless.main import main

main()
