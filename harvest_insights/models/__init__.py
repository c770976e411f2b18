"""Pydantic models for configuration, Harvest payloads and analytics results"""
