"""
Shared configuration, constants, errors, metrics and HTTP helpers.
"""
