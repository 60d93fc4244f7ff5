"""
rpcctl - ReflectRPC command-line client
"""
