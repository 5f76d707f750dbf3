"""
Realtime app for WebSocket communication with riders and drivers.

This app provides:
- WebSocket consumers for drivers and riders
- The channel-layer transport used by the dispatch engine
- The per-process dispatch engine instance

Key Components:
    - consumers/: WebSocket consumers (driver, rider)
    - notifications.py: ChannelLayerTransport (session id = channel name)
    - engine.py: get_dispatch_engine() / reset_dispatch_engine()
"""
