"""
Cast Sender

Shares one connection to a Cast device between several logical senders,
attaches each sender to the application session it can control and routes
playback, volume and lifecycle commands to it.
"""
