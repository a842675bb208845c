"""DonorHub rewards API package."""
