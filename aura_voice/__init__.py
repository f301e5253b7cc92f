"""
aura-voice: Voice-to-agent session daemon

A single authoritative session core that records speech, transcribes it,
optionally runs it through a language-model agent, and keeps every attached
surface (windows, CLI watchers, hotkeys) in sync via Unix socket IPC.
"""

__version__ = "0.1.0"
