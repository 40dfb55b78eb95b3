"""Claims API"""
