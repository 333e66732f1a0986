"""
Device discovery listener.

Subscribes to a broker register topic, validates device announcements, and
hands discovered devices to the registration pipeline through a queue.
"""
