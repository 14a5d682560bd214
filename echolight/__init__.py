"""EchoLight delivery cadence and release engine."""
