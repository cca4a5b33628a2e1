"""API routers for fundtrace"""
