"""Core domain package for copytune.

Core contains classification, prompt assembly, provider wire formats, batch
orchestration and the settings store without any storage, HTTP or document
specific code, keeping the business logic portable.
"""
