"""HTTP surface of the study progression engine"""
