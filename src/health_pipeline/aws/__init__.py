"""AWS client management and policy documents."""
