"""Wallets API"""
