"""
Service modules for RakshaSetu
"""
