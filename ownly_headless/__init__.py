"""
Ownly Headless — Agent control plane for synchronized workspaces.

This package runs a node without a browser: it bootstraps the node's network
identity, joins a shared workspace, and keeps exactly one agent attached to a
chat channel of that workspace.

Layers (bottom to top):
    1. Identity bootstrap (challenge/response against the identity service)
    2. Workspace session (join-or-resume with a pre-shared key)
    3. Channel bridge (self-reply guard, AI reply or digest dispatch)
    4. Digest pipeline (agenda excerpt rendered into a mail template)
    5. Agent lifecycle (singleton handle with hot-swap over HTTP)
"""

__version__ = "0.1.0"
