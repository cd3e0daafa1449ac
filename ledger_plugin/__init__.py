"""Bank session and synchronisation engine for the WarbandLedger plugin."""
