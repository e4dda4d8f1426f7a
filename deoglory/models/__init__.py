"""Pydantic models for the study progression engine"""
