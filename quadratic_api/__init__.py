"""
Backend package for the Quadratic API.

A FastAPI service that stores spreadsheet files per user, accepts file
backups from the client and proxies AI autocomplete requests.
"""
