"""Services for mtgo-tracker."""
