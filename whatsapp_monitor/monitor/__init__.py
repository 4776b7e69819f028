"""Connection state machine, detection and background monitoring loops."""
