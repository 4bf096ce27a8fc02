"""JSON API handlers for the IP, DNS, certificate and mail tools."""