"""Microsoft Graph integration -- auth contexts, token acquisition, and the
online-meeting/transcript client.
"""
