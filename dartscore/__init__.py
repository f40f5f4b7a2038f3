"""Darts 301/501 scoring with realtime snapshot sync across devices."""
