"""AWS access: boto3 client management and EC2 host resolution."""
