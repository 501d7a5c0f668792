"""
Process-wide helpers shared by the engine packages (environment parsing).
"""
