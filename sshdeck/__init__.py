"""SSH toolbox: remote hardware stats, port forwarding, SOCKS proxy, SFTP copy, interactive terminals and job scheduling."""

__version__ = "0.1.0"