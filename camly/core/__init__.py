"""Core configuration, database, security and monitoring"""
