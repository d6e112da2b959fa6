"""
Test Tools Package
Tests for the tools module (timezone resolver, streak calculator, delivery channels)
"""
