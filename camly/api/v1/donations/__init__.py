"""Donations API"""
