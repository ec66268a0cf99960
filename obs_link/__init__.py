"""
obs-link — asyncio client for the obs-websocket v5 protocol.

Modules:
  core/     — handshake, request correlation, reidentify, event fan-out, Session
  config/   — Settings, env loading, YAML config
  main.py   — typer CLI (check / request / batch / events / init-config)
"""

__version__ = "1.0.0"
