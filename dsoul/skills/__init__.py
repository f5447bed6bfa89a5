"""Content-verified skill install and lifecycle engine"""
