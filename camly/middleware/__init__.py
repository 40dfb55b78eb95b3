"""Middleware package"""
