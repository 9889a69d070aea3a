"""Mercury: panel integration layer for the Mercury hosting backend.

Quickstart::

    from mercury.integrations.ptero import NodeStatus, StatusOptions

    status = NodeStatus(StatusOptions(
        domain="https://panel.example.com",
        auth="ptla_...",
        nodes=[1, 2],
        call_interval=30_000,
    ))
    status.on("interval", print)
    await status.connect()
"""

__version__ = "1.0.0"
