"""Issue triage GitHub App.

Receives ``issues`` webhooks, serialises work per installation, claims each
issue atomically, and posts a single duplicate-triage comment per cooldown
window.
"""

__version__ = "0.1.0"
