"""Supporting helpers for Stowage"""
