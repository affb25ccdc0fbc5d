"""
toolmount.api.v1 - Version 1 of the REST API
"""
