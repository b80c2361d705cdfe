"""
Core application engine.

`ServiceConnectionManager` keeps track of whether the download service is
reachable, `DownloadQueueTracker` follows every submitted job to completion,
and `BridgeService` wires both to the configuration and the event bus.
"""
