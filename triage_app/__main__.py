"""Allow running the app via ``python -m triage_app``."""

from triage_app.main import main

main()
