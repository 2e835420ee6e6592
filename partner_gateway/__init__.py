"""Partner credential gateway: token brokering for the ThirdParty and Docman APIs."""
